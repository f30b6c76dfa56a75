from datetime import datetime, timezone

from confluence_alert_bot.sessions import (
    ASIA,
    LONDON,
    NY,
    SessionFilter,
    current_session,
    is_high_volatility,
    next_session_change,
    session_status,
)


def _ms(hour: int, minute: int = 0) -> int:
    return int(datetime(2024, 1, 2, hour, minute, tzinfo=timezone.utc).timestamp() * 1000)


def test_current_session_boundaries():
    assert current_session(_ms(3)) == ASIA
    assert current_session(_ms(8)) == LONDON
    assert current_session(_ms(14)) == LONDON  # overlap goes to London
    assert current_session(_ms(17)) == NY
    assert current_session(_ms(21, 59)) == NY
    assert current_session(_ms(22)) == ASIA
    assert current_session(_ms(23)) == ASIA


def test_session_status_flags():
    st = session_status(_ms(14))
    assert st["current"] == LONDON
    assert st["london"]["active"] is True
    assert st["ny"]["active"] is True
    assert st["asia"]["active"] is False

    st = session_status(_ms(10))
    assert st["ny"]["status"] == "OPENING"
    st = session_status(_ms(23, 30))
    assert st["asia"]["status"] == "ACTIVE"
    assert st["ny"]["status"] == "CLOSED"


def test_high_volatility_windows():
    assert is_high_volatility(_ms(8, 30)) is True
    assert is_high_volatility(_ms(13)) is True
    assert is_high_volatility(_ms(11)) is False
    assert is_high_volatility(_ms(15)) is False


def test_next_session_change():
    assert next_session_change(_ms(7, 30)) == {"session": LONDON, "time_until_ms": 30 * 60_000}
    assert next_session_change(_ms(12)) == {"session": NY, "time_until_ms": 60 * 60_000}
    assert next_session_change(_ms(23, 15))["session"] == LONDON
    assert next_session_change(_ms(23, 15))["time_until_ms"] == (9 * 60 - 15) * 60_000


def test_session_filter():
    assert SessionFilter(enabled=False, sessions=["LONDON"]).allows(ASIA)
    assert SessionFilter(enabled=True, sessions=None).allows(ASIA)
    f = SessionFilter(enabled=True, sessions=["london", "NY"])
    assert f.allows(LONDON)
    assert f.allows(NY)
    assert not f.allows(ASIA)


def test_session_status_carries_volatility_and_next_change():
    st = session_status(_ms(8, 30))
    assert st["high_volatility"] is True
    assert st["next_change"] == {"session": NY, "time_until_ms": (4 * 60 + 30) * 60_000}
    assert session_status(_ms(11))["high_volatility"] is False
