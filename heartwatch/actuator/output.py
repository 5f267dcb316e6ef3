"""
Interpretation of lifecycle-tool output.

The lifecycle tool reports its result as free text, so the mapping below is
a substring heuristic tied to the wording of the tool. It is kept in this
one function so it can be replaced without touching its callers.
"""

import logging
from typing import Optional

from heartwatch.actuator.responses import Action, Response

log = logging.getLogger(__name__)

UNKNOWN_APPLICATION = "Unknown application"
ALREADY_RUNNING = "already running"
NOHUP_NOTICE = "nohup:"
WAS_NOT_RUNNING = "was not running"
NOT_MARKER = "NOT"
RUNNING_MARKER = "running"


def interpret_output(action: Action, stdout: Optional[str], exit_code: int = 0) -> Response:
    """
    Maps the output of one lifecycle-tool invocation to a Response.

    :param action: The verb that was executed.
    :param stdout: Everything the tool printed on stdout.
    :param exit_code: The tool's exit status.
    :return: The interpreted response; EXECUTION_ERROR if nothing matched.
    """
    output = (stdout or "").strip()

    if UNKNOWN_APPLICATION in output:
        return Response.UNKNOWN_COMPONENT

    if action in (Action.START, Action.RESTART):
        if ALREADY_RUNNING in output:
            return Response.RUNNING
        if NOHUP_NOTICE in output or (not output and exit_code == 0):
            return Response.START_ATTEMPTED
    elif action is Action.STOP:
        if WAS_NOT_RUNNING in output:
            return Response.NOT_RUNNING
        # A successful stop prints nothing, or a short confirmation.
        if exit_code == 0:
            return Response.STOPPED
    elif action is Action.STATUS:
        if NOT_MARKER in output:
            return Response.NOT_RUNNING
        if RUNNING_MARKER in output:
            return Response.RUNNING

    log.info(f"Unrecognized {action.value} output (exit code {exit_code}): {output[:200]!r}")
    return Response.EXECUTION_ERROR
