"""Exit-time decision for one ffmpeg attempt.

`decide` is a pure function of the attempt outcome, the current argument
vector and the retry state. Rules, first match wins:

0. the supervisor aborted the run (stall/freeze)         -> FAILED
1. clean exit, no error tail                             -> DONE
2. clean exit with an error tail and no condition flag   -> DONE with a warning,
   or FAILED in strict mode
3. filter incompatibility and the known-bad -vf fragment -> rewrite it, RETRY (no budget)
4. GPU out of memory                                     -> RETRY after backoff until max_retry
5. decoder surfaces exhausted, extra_hw_frames < ceiling -> bump extra_hw_frames, RETRY
6. anything else                                         -> FAILED with the error tail

Each RETRY changes at most one argument token and increments the retry counter.
"""

from typing import List, Sequence
from ffwatch.config.models import RetryConfig
from ffwatch.domain.models import AttemptOutcome, Decision, RetryState, SupervisorAction
from ffwatch.infrastructure.ffmpeg import EXTRA_HW_FRAMES_OPTION, replace_option_value

FILTER_OPTION = "-vf"
FILTER_BUG_FRAGMENT = "format=nv12,hwupload,scale_npp="
FILTER_BUG_REPLACEMENT = "scale_npp="


def has_filter_bug(args: Sequence[str]) -> bool:
    return any(
        args[i - 1] == FILTER_OPTION and FILTER_BUG_FRAGMENT in args[i]
        for i in range(1, len(args))
    )


def rewrite_filter_bug(args: Sequence[str]) -> List[str]:
    """Drops the redundant nv12 upload from every -vf chain; other args untouched."""
    result = list(args)
    for i in range(1, len(result)):
        if result[i - 1] == FILTER_OPTION:
            result[i] = result[i].replace(FILTER_BUG_FRAGMENT, FILTER_BUG_REPLACEMENT)
    return result


def _failed(args: Sequence[str], state: RetryState, reason: str) -> Decision:
    return Decision(action=SupervisorAction.FAILED, args=list(args), state=state, reason=reason)


def _failure_reason(outcome: AttemptOutcome) -> str:
    if outcome.error_tail:
        return outcome.error_tail
    if outcome.spawn_error:
        return outcome.spawn_error
    return f"ffmpeg exited with code {outcome.returncode}"


def decide(outcome: AttemptOutcome, args: Sequence[str], state: RetryState, config: RetryConfig) -> Decision:
    if outcome.aborted:
        return _failed(args, state, outcome.aborted)

    flags = outcome.flags
    if outcome.exited_cleanly:
        if not outcome.error_tail:
            return Decision(action=SupervisorAction.DONE, args=list(args), state=state)
        if flags.any_set:
            # ffmpeg recovered on its own; the flag only explains the error text
            return Decision(
                action=SupervisorAction.DONE,
                args=list(args),
                state=state,
                warning=f"non fatal error ({', '.join(flags.names())}): {outcome.error_tail}",
            )
        if not config.strict_errors:
            return Decision(
                action=SupervisorAction.DONE,
                args=list(args),
                state=state,
                warning=f"non fatal error: {outcome.error_tail}",
            )
        return _failed(args, state, f"zero exit code but parsed fatal error: {outcome.error_tail}")

    if flags.filter_incompatible and has_filter_bug(args):
        return Decision(
            action=SupervisorAction.RETRY,
            args=rewrite_filter_bug(args),
            state=state.model_copy(update={"retry": state.retry + 1}),
            subject="filterbug",
            reason="gpu filter bug",
        )

    if flags.vram_overflow:
        if state.retry >= config.max_retry:
            return _failed(args, state, f"max retry reached: gpu OOM: {outcome.error_tail!r}")
        return Decision(
            action=SupervisorAction.RETRY,
            args=list(args),
            state=state.model_copy(update={"retry": state.retry + 1}),
            subject="oom",
            reason=f"gpu out of vram: {outcome.error_tail!r}",
            backoff_s=config.backoff_s,
        )

    hw_frames = state.extra_hw_frames
    if flags.hw_frames_exhausted and hw_frames is not None and hw_frames < config.max_extra_hw_frames:
        hw_frames += 1
        return Decision(
            action=SupervisorAction.RETRY,
            args=replace_option_value(args, EXTRA_HW_FRAMES_OPTION, str(hw_frames)),
            state=state.model_copy(update={"retry": state.retry + 1, "extra_hw_frames": hw_frames}),
            subject="retry",
            reason=f"increment extra_hw_frames to {hw_frames}",
        )

    return _failed(args, state, _failure_reason(outcome))
