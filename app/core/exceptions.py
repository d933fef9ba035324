"""Таксономия ошибок модуля лицензирования.

Каждая ошибка знает, имеет ли смысл повторять операцию (``retryable``):
NotFound/Forbidden/Conflict/ValidationError повторять нельзя, сбои
хранилища и доставки - можно (с учетом идемпотентности записи).
"""


class LicensingError(Exception):
    """Базовая ошибка домена лицензирования"""

    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFound(LicensingError, LookupError):
    """Запрошенная сущность не существует"""


class Forbidden(LicensingError, PermissionError):
    """Пользователь не является стороной запроса"""


class Conflict(LicensingError):
    """Переход из терминального состояния или устаревшая версия"""


class ValidationError(LicensingError, ValueError):
    """Некорректные условия лицензии или входные данные"""


class StorageError(LicensingError):
    """Сбой базы данных или объектного хранилища"""

    retryable = True


class TransportError(LicensingError):
    """Сбой доставки realtime-события"""

    retryable = True
