from __future__ import annotations

import re
import threading
from typing import Callable, Optional, Sequence, Tuple

from .auth import CancelledError, Device, SelectionCancelledError, Step
from .config import MFA_PASSCODE_LENGTH

_PASSCODE = re.compile(rf"[0-9]{{{MFA_PASSCODE_LENGTH}}}")
_INDEX = re.compile(r"[0-9]+")


def _describe(device: Device) -> str:
    name = device.name or device.id
    return f"{name} ({device.factor_type})" if device.factor_type else name


def _reader(input_func: Callable[[str], str], cancel: Optional[threading.Event]) -> Callable[[str], str]:
    def read(prompt: str) -> str:
        if cancel is not None and cancel.is_set():
            raise CancelledError("login cancelled", step=Step.SELECT_DEVICE)
        answer = input_func(prompt)
        if cancel is not None and cancel.is_set():
            raise CancelledError("login cancelled", step=Step.SELECT_DEVICE)
        return answer

    return read


def _choose(
    devices: Sequence[Device],
    read: Callable[[str], str],
    output: Callable[[str], None],
) -> Device:
    if len(devices) == 1:
        return devices[0]

    for i, d in enumerate(devices, start=1):
        output(f"  {i}) {_describe(d)}")
    while True:
        raw = read(f"Device [1-{len(devices)}]: ").strip()
        if _INDEX.fullmatch(raw) and 1 <= int(raw) <= len(devices):
            return devices[int(raw) - 1]
        output(f"Enter a number between 1 and {len(devices)}.")


def _passcode(read: Callable[[str], str], output: Callable[[str], None]) -> str:
    while True:
        code = read("Passcode: ").strip()
        if _PASSCODE.fullmatch(code):
            return code
        output(f"Passcode must be {MFA_PASSCODE_LENGTH} digits.")


def prompt_select_device(
    devices: Sequence[Device],
    *,
    cancel: Optional[threading.Event] = None,
    input_func: Callable[[str], str] = input,
    output: Callable[[str], None] = print,
) -> Tuple[Device, str]:
    """
    Terminal device selector: pick a device (skipped when only one is
    enrolled), then read a 6-digit passcode.  Ctrl-C / Ctrl-D cancels the
    selection; a set ``cancel`` event stops it between answers.
    """
    if not devices:
        raise SelectionCancelledError("no devices to choose from")
    read = _reader(input_func, cancel)
    try:
        device = _choose(devices, read, output)
        return device, _passcode(read, output)
    except (EOFError, KeyboardInterrupt) as e:
        raise SelectionCancelledError("device selection aborted") from e


__all__ = ["prompt_select_device"]
