import time
import logging
import subprocess
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Union

from heartwatch.actuator import process_utils
from heartwatch.actuator.output import interpret_output
from heartwatch.actuator.responses import Action, Response
from heartwatch.registry.component import MonitoredComponent

log = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class AppManagerSettings:
    """Where and how the external lifecycle tool is invoked."""
    path: Path = Path(".")
    command: str = "./appMgr"
    timeout: float = 60
    step_delay: float = 5

    @classmethod
    def from_config(cls, config: Any) -> "AppManagerSettings":
        return cls(
            path=Path(config.APP_MGR_PATH),
            command=config.APP_MGR_COMMAND,
            timeout=config.APP_MGR_TIMEOUT,
            step_delay=config.APP_MGR_STEP_DELAY,
        )


@dataclass
class RemediationReport:
    """The steps taken while remediating one component, in order."""
    component_id: str
    steps: List[Tuple[str, str]] = field(default_factory=list)

    def add(self, step: str, outcome: Union[Response, str]) -> None:
        self.steps.append((step, str(outcome)))

    @property
    def step_names(self) -> List[str]:
        return [name for name, _ in self.steps]

    def summary(self) -> str:
        lines = ["Steps taken to restart service, and available results:", ""]
        lines.extend(f"{name + ':':<10}{outcome}" for name, outcome in self.steps)
        return "\n".join(lines)


class AppManager:
    """
    Runs the external lifecycle tool for a component and reports a typed
    Response. Nothing here raises on a failed or uninterpretable command.
    """

    def __init__(self, settings: AppManagerSettings = None, runner: Runner = subprocess.run,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.settings = settings or AppManagerSettings()
        self._runner = runner
        self._sleep = sleep

    #* --- Lifecycle Commands ---
    def run(self, component: Union[MonitoredComponent, str], action: Action) -> Response:
        """
        Executes one lifecycle action for a component.

        :param component: The component, or the name the lifecycle tool knows it by.
        :param action: The verb to execute.
        :return: The interpreted response.
        """
        name = component.lifecycle_name if isinstance(component, MonitoredComponent) else component
        if action is Action.RESTART:
            return self._restart(name)
        return self._execute(name, action)

    def start(self, component: Union[MonitoredComponent, str]) -> Response:
        return self.run(component, Action.START)

    def stop(self, component: Union[MonitoredComponent, str]) -> Response:
        return self.run(component, Action.STOP)

    def status(self, component: Union[MonitoredComponent, str]) -> Response:
        return self.run(component, Action.STATUS)

    def restart(self, component: Union[MonitoredComponent, str]) -> Response:
        return self.run(component, Action.RESTART)

    def _restart(self, name: str) -> Response:
        # The tool's own restart verb does not restart a running instance.
        stop = self._execute(name, Action.STOP)
        log.debug(f"restart '{name}': stop -> {stop}")
        self._sleep(self.settings.step_delay)
        start = self._execute(name, Action.START)
        log.debug(f"restart '{name}': start -> {start}")
        self._sleep(self.settings.step_delay)
        return self._execute(name, Action.STATUS)

    def _execute(self, name: str, action: Action) -> Response:
        args = [self.settings.command, name, *action.arguments]
        log.info(f"Executing lifecycle command: {' '.join(args)} (cwd={self.settings.path})")
        try:
            result = self._runner(
                args,
                cwd=str(self.settings.path),
                capture_output=True,
                text=True,
                timeout=self.settings.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            log.error(f"Lifecycle command for '{name}' timed out after {self.settings.timeout}s")
            return Response.ABORTED
        except (OSError, subprocess.SubprocessError) as e:
            log.error(f"Failed to execute lifecycle command for '{name}': {e}")
            return Response.FAILED_TO_EXECUTE

        process_utils.log_output_lines(name, result.stdout, result.stderr)
        response = interpret_output(action, result.stdout, result.returncode)
        log.info(f"Lifecycle {action.value} for '{name}' -> {response}")
        return response

    #* --- Process Table ---
    def find_pid(self, pattern: str) -> Optional[int]:
        return process_utils.find_pid(pattern)

    def kill(self, pid_or_pattern: Union[int, str], forceful: bool = False) -> Response:
        return process_utils.kill(pid_or_pattern, forceful)

    #* --- Remediation ---
    def remediate(self, component: MonitoredComponent) -> RemediationReport:
        """
        Stops a component, kills any residual process, starts it again and
        reports its status.

        Every step runs regardless of the outcome of the previous one.

        :param component: The component to remediate.
        :return: The outcome of each step, in execution order.
        """
        name = component.lifecycle_name
        report = RemediationReport(component.id)
        log.warning(f"Remediating component '{component.id}' via lifecycle name '{name}'")

        report.add("stop", self._execute(name, Action.STOP))

        pid = self.find_pid(name)
        if pid is None:
            report.add("getPid", "No pid found")
        else:
            report.add("kill", self.kill(pid, forceful=True))

        report.add("start", self._execute(name, Action.START))
        report.add("status", self._execute(name, Action.STATUS))
        return report
