from enum import Enum


class Action(Enum):
    """Lifecycle verbs understood by the external lifecycle tool."""
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    STATUS = "status"

    @property
    def arguments(self):
        """Command-line arguments following the component name."""
        if self in (Action.START, Action.RESTART):
            return [self.value, "background"]
        return [self.value]


class Response(Enum):
    """Typed outcome of a lifecycle or process-table operation."""
    RUNNING = "Running"
    NOT_RUNNING = "NotRunning"
    UNKNOWN_COMPONENT = "UnknownComponent"
    FAILED_TO_EXECUTE = "FailedToExecute"
    START_ATTEMPTED = "StartAttempted"
    STOPPED = "Stopped"
    EXECUTION_ERROR = "ExecutionError"
    ABORTED = "Aborted"
    # Outcomes of kill()
    KILLED = "Killed"
    PID_NOT_FOUND = "PidNotFound"
    KILL_FAILED = "KillFailed"

    def __str__(self) -> str:
        return self.value
