from __future__ import annotations


class InvalidStatus(ValueError):
    def __init__(self, name: object):
        self.name = name
        super().__init__(f"Unknown status: {name!r}")


class InvalidStatusType(InvalidStatus):
    def __init__(self, name: object):
        super().__init__(name)
        self.args = (f"Unknown status update type: {name!r}",)


class InvalidTimeSpec(ValueError):
    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Unrecognized time: {value!r}")


class TopicNotFound(LookupError):
    def __init__(self, topic_id: object):
        self.topic_id = topic_id
        super().__init__(f"Topic {topic_id} not found")


class StatusUpdateValidationError(ValueError):
    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        details = "; ".join(f"{field} {', '.join(messages)}" for field, messages in errors.items())
        super().__init__(details or "Status update is invalid")


class TransientFailure(RuntimeError):
    pass
