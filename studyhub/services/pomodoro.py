"""
Shared Pomodoro timer transitions.

The timer is anchored to a wall-clock ``startTime`` rather than ticking on a
server: every client derives the countdown from the shared state, so all of
them show the same value.

    stopped(mode) --start--> running(mode, now)
    running(mode) --stop---> stopped(mode)          elapsed time is discarded
    running(focus) --expire-> stopped(break)
    running(break) --expire-> stopped(focus)
    any           --reset--> stopped(focus)
"""
from studyhub.core.config import BREAK_DURATION_SECONDS, FOCUS_DURATION_SECONDS
from studyhub.models.room import PomodoroMode, PomodoroState

RUNNING = "running"
STOPPED = "stopped"
FOCUS = "focus"
BREAK = "break"


def duration_for(mode: PomodoroMode) -> int:
    """Length of a period in seconds"""
    return FOCUS_DURATION_SECONDS if mode == FOCUS else BREAK_DURATION_SECONDS


def next_mode(mode: PomodoroMode) -> PomodoroMode:
    return BREAK if mode == FOCUS else FOCUS


def start(state: PomodoroState, now: int) -> PomodoroState:
    if state.state == RUNNING:
        return state
    return PomodoroState(state=RUNNING, mode=state.mode, startTime=now)


def stop(state: PomodoroState) -> PomodoroState:
    return PomodoroState(state=STOPPED, mode=state.mode, startTime=0)


def expire(state: PomodoroState) -> PomodoroState:
    if state.state != RUNNING:
        return state
    return PomodoroState(state=STOPPED, mode=next_mode(state.mode), startTime=0)


def reset() -> PomodoroState:
    return PomodoroState(state=STOPPED, mode=FOCUS, startTime=0)


def time_left(state: PomodoroState, now: int) -> int:
    """Seconds remaining in the current period; the full duration while stopped"""
    duration = duration_for(state.mode)
    if state.state != RUNNING:
        return duration
    # Clock skew between clients can put startTime slightly in the future
    elapsed = max(0, (now - state.startTime) // 1000)
    return max(0, duration - elapsed)


def is_expired(state: PomodoroState, now: int) -> bool:
    return state.state == RUNNING and time_left(state, now) == 0


def expiry_announcement(mode: PomodoroMode) -> str:
    """System chat message posted when a ``mode`` period runs out"""
    if mode == FOCUS:
        return f"Focus session complete! Time for a {BREAK_DURATION_SECONDS // 60}-minute break."
    return "Break's over! Time for a new focus session."
