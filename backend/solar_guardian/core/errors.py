class IngestionError(Exception):
    """Base for failures reported back to a submitting device as ``{success: false}``."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidReading(IngestionError):
    status_code = 400


class DeviceNotMapped(IngestionError):
    status_code = 404

    def __init__(self, device_id: str):
        super().__init__(f"Device {device_id} not found in mapping")
        self.device_id = device_id


class PanelsNotFound(IngestionError):
    status_code = 404


class PersistenceFailure(IngestionError):
    status_code = 500
