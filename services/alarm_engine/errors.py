class AlarmEngineError(Exception):
    """Base class for alarm engine failures."""


class RuleNotFoundError(AlarmEngineError):
    def __init__(self, rule_id: str):
        super().__init__(f"Alarm rule not found: {rule_id}")
        self.rule_id = rule_id


class RuleLoadError(AlarmEngineError):
    """The applicable rule set for a device could not be loaded."""

    def __init__(self, device_id: str, cause: BaseException):
        super().__init__(f"Failed to load alarm rules for device {device_id}: {cause}")
        self.device_id = device_id
        self.cause = cause


class DeviceNotFoundError(AlarmEngineError):
    def __init__(self, device_id: str):
        super().__init__(f"Device not found: {device_id}")
        self.device_id = device_id


class NotificationError(AlarmEngineError):
    """A notification channel is unusable (e.g. missing provider config)."""
