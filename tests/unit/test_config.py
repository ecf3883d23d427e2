from __future__ import annotations

import pytest

from dynamap_py import DynamapError, PollPolicy, RetryPolicy, Settings


def test_retry_policy_delay_doubles_up_to_the_cap() -> None:
    policy = RetryPolicy(base_delay=0.1, max_delay=0.5)

    assert [policy.delay(n) for n in (1, 2, 3, 4)] == [0.1, 0.2, 0.4, 0.5]


def test_poll_policy_delay_backs_off() -> None:
    assert PollPolicy(interval=1.0).delay(5) == 1.0
    assert [PollPolicy(interval=1.0, backoff_factor=3.0, max_interval=5.0).delay(n) for n in (1, 2, 3)] == [
        1.0,
        3.0,
        5.0,
    ]


@pytest.mark.parametrize(
    "build",
    [
        lambda: RetryPolicy(max_retries=-1),
        lambda: RetryPolicy(base_delay=-0.1),
        lambda: PollPolicy(max_attempts=0),
        lambda: PollPolicy(backoff_factor=0.5),
        lambda: Settings(get_chunk_size=101),
        lambda: Settings(write_chunk_size=0),
        lambda: Settings(batch_max_workers=0),
    ],
)
def test_invalid_policies_are_rejected(build) -> None:
    with pytest.raises(DynamapError):
        build()


def test_settings_from_env() -> None:
    settings = Settings.from_env(
        {
            "DYNAMAP_WRITE_CHUNK_SIZE": "10",
            "DYNAMAP_MAX_RETRIES": "2",
            "DYNAMAP_RETRY_BASE_DELAY": "0.2",
            "DYNAMAP_POLL_TIMEOUT": "30",
            "DYNAMAP_DEFERRED_WORKERS": " 8 ",
        }
    )

    assert settings.write_chunk_size == 10
    assert settings.get_chunk_size == 100
    assert settings.retry == RetryPolicy(max_retries=2, base_delay=0.2, max_delay=1.0)
    assert settings.poll.timeout_seconds == 30.0
    assert settings.deferred_workers == 8
    assert Settings.from_env({}) == Settings()


def test_settings_from_env_rejects_garbage() -> None:
    with pytest.raises(DynamapError, match="DYNAMAP_MAX_RETRIES"):
        Settings.from_env({"DYNAMAP_MAX_RETRIES": "many"})
    with pytest.raises(DynamapError):
        Settings.from_env({"DYNAMAP_GET_CHUNK_SIZE": "500"})
