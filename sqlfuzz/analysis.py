from dataclasses import asdict, dataclass
from enum import Enum
import os
import signal
from typing import Optional


class TerminationType(str, Enum):
    SIGNALED = "SIGNALED"  # Killed by a signal (SIGSEGV, SIGABRT, ...).
    FAULT_EXIT = "FAULT_EXIT"  # The parser raised and the worker bailed out.
    EXITED = "EXITED"  # Any other exit status.
    UNKNOWN = "UNKNOWN"


@dataclass
class TerminationSignature:
    termination_type: TerminationType
    returncode: int  # Negative signal number when signaled, like subprocess.
    signal_name: Optional[str]
    fingerprint: str

    def to_dict(self) -> dict:
        return asdict(self)


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"SIG_{signum}"


def decode_wait_status(status: int, fault_exit_code: int) -> TerminationSignature:
    """Turn a raw os.waitpid() status into a TerminationSignature."""
    if os.WIFSIGNALED(status):
        signum = os.WTERMSIG(status)
        name = signal_name(signum)
        return TerminationSignature(
            termination_type=TerminationType.SIGNALED,
            returncode=-signum,
            signal_name=name,
            fingerprint=f"SIGNAL:{name}",
        )

    if os.WIFEXITED(status):
        code = os.WEXITSTATUS(status)
        if code == fault_exit_code:
            return TerminationSignature(
                termination_type=TerminationType.FAULT_EXIT,
                returncode=code,
                signal_name=None,
                fingerprint="PYTHON:ParserException",
            )
        return TerminationSignature(
            termination_type=TerminationType.EXITED,
            returncode=code,
            signal_name=None,
            fingerprint=f"EXIT:{code}",
        )

    return TerminationSignature(
        termination_type=TerminationType.UNKNOWN,
        returncode=status,
        signal_name=None,
        fingerprint=f"STATUS:{status}",
    )
