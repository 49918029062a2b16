import pytest

from conftest import FakeSession, RecordingSleep
from demo_explorer.config import RecoveryOptions
from demo_explorer.error_recovery import ErrorRecovery, ErrorType, RecoveryContext, Resolution
from demo_explorer.errors import FallbackRequired


class PlaywrightTimeout(Exception):
    pass


class FixedAlternatives:
    def __init__(self, alternatives):
        self.alternatives = alternatives

    async def find_alternatives(self, selector):
        return list(self.alternatives)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("net::ERR_NAME_NOT_RESOLVED at https://acme.test", ErrorType.NAVIGATION_FAILED),
        ("waiting for selector '#buy' failed", ErrorType.ELEMENT_NOT_FOUND),
        ("Click intercepted by modal overlay", ErrorType.MODAL_BLOCKED),
        ("Timeout 30000ms exceeded", ErrorType.TIMEOUT),
        ("screenshot could not be taken", ErrorType.SCREENSHOT_FAILED),
        ("something odd", ErrorType.UNKNOWN),
    ],
)
def test_classify_error_by_message(message, expected):
    assert ErrorRecovery.classify_error(RuntimeError(message)) is expected


def test_classify_error_by_exception_name():
    assert ErrorRecovery.classify_error(PlaywrightTimeout("slow")) is ErrorType.TIMEOUT
    # earlier rules win over the name check
    assert ErrorRecovery.classify_error(PlaywrightTimeout("element not found")) is ErrorType.ELEMENT_NOT_FOUND


@pytest.mark.asyncio
async def test_timeout_is_skipped():
    recovery = ErrorRecovery(sleep=RecordingSleep())

    result = await recovery.recover(RuntimeError("Timeout 30000ms exceeded"))

    assert result.action is Resolution.SKIP
    assert result.error_type is ErrorType.TIMEOUT
    assert result.absorbed is True
    assert recovery.get_stats()["errorsByType"] == {"timeout": 1}


@pytest.mark.asyncio
async def test_circuit_breaker_trips_on_the_tenth_fault():
    recovery = ErrorRecovery(sleep=RecordingSleep())
    errors = [RuntimeError("Timeout exceeded"), RuntimeError("boom")] * 5

    results = [await recovery.recover(err) for err in errors]

    assert all(r.action is Resolution.SKIP for r in results[:9])
    assert results[9].action is Resolution.FALLBACK
    assert recovery.should_abort() is True
    assert recovery.fault_log[-1].kind is ErrorType.UNKNOWN
    assert recovery.fault_log[-1].resolution is Resolution.FALLBACK

    # once tripped, every later fault falls back whatever its type
    later = [await recovery.recover(RuntimeError("screenshot failed")), await recovery.recover(RuntimeError("boom"))]
    assert [r.action for r in later] == [Resolution.FALLBACK, Resolution.FALLBACK]
    assert recovery.total_errors == 12


@pytest.mark.asyncio
async def test_repeated_type_escalates_to_fallback():
    recovery = ErrorRecovery(RecoveryOptions(max_retries=3, max_total_errors=10, type_escalation_factor=2),
                             sleep=RecordingSleep())

    results = [await recovery.recover(RuntimeError("Timeout exceeded")) for _ in range(6)]

    assert [r.action for r in results[:5]] == [Resolution.SKIP] * 5
    assert results[5].action is Resolution.FALLBACK
    assert recovery.should_abort() is False


@pytest.mark.asyncio
async def test_navigation_failure_reloads_then_retries(site):
    session = FakeSession(site)
    sleep = RecordingSleep()
    recovery = ErrorRecovery(sleep=sleep)

    result = await recovery.recover(RuntimeError("net::ERR_CONNECTION_RESET"), RecoveryContext(automation=session))

    assert result.action is Resolution.RETRY
    assert ("reload",) in session.calls
    assert sleep.calls[0] == 1.0


@pytest.mark.asyncio
async def test_navigation_failure_without_automation_is_skipped():
    recovery = ErrorRecovery(sleep=RecordingSleep())

    result = await recovery.recover(RuntimeError("navigation failed"))

    assert result.action is Resolution.SKIP


@pytest.mark.asyncio
async def test_element_not_found_uses_alternative_target():
    recovery = ErrorRecovery(sleep=RecordingSleep())
    ctx = RecoveryContext(selector="#buy", alternative_finder=FixedAlternatives(["text=Buy now"]))

    result = await recovery.recover(RuntimeError("element not found"), ctx)

    assert result.action is Resolution.RETRY
    assert ctx.current_target == "text=Buy now"

    no_alt = await recovery.recover(RuntimeError("element not found"), RecoveryContext(selector="#buy"))
    assert no_alt.action is Resolution.SKIP


@pytest.mark.asyncio
async def test_modal_blocked_presses_escape_then_retries(site):
    session = FakeSession(site)
    recovery = ErrorRecovery(sleep=RecordingSleep())

    result = await recovery.recover(RuntimeError("dialog is blocking"), RecoveryContext(automation=session))

    assert result.action is Resolution.RETRY
    assert ("press_key", "Escape") in session.calls


@pytest.mark.asyncio
async def test_failing_handler_exhausts_attempts():
    async def broken_sleep(seconds):
        raise RuntimeError("clock stopped")

    recovery = ErrorRecovery(sleep=broken_sleep)

    result = await recovery.recover(RuntimeError("screenshot failed"))

    assert result.action is Resolution.FALLBACK
    assert result.message == "Recovery attempts exhausted"


@pytest.mark.asyncio
async def test_run_guarded_reruns_after_retry_verdict():
    recovery = ErrorRecovery(sleep=RecordingSleep())
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("screenshot failed")
        return "captured"

    outcome = await recovery.run_guarded(flaky)

    assert outcome.ok is True
    assert outcome.value == "captured"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_run_guarded_skip_returns_not_ok():
    recovery = ErrorRecovery(sleep=RecordingSleep())

    async def slow():
        raise RuntimeError("Timeout 5000ms exceeded")

    outcome = await recovery.run_guarded(slow)

    assert outcome.ok is False
    assert outcome.recovery.action is Resolution.SKIP


@pytest.mark.asyncio
async def test_run_guarded_raises_on_fallback():
    recovery = ErrorRecovery(RecoveryOptions(max_total_errors=1), sleep=RecordingSleep())

    async def broken():
        raise RuntimeError("boom")

    with pytest.raises(FallbackRequired) as info:
        await recovery.run_guarded(broken)
    assert info.value.recovery.action is Resolution.FALLBACK


@pytest.mark.asyncio
async def test_reset_clears_counters():
    recovery = ErrorRecovery(sleep=RecordingSleep())
    await recovery.recover(RuntimeError("boom"))

    recovery.reset()

    stats = recovery.get_stats()
    assert stats["totalErrors"] == 0
    assert stats["errorLog"] == []
    assert stats["successRate"] == 1.0
