from backend.notification_identity import derive_notification_id


def test_small_ids_match_rolling_hash():
    assert derive_notification_id('') == 0
    assert derive_notification_id('a') == 97
    assert derive_notification_id('ab') == 97 * 31 + 98
    assert derive_notification_id('hello') == 99162322


def test_overflowing_hash_is_folded_then_made_positive():
    # Same fold as a 32-bit string hash; this one lands negative before abs
    assert derive_notification_id('Hello World') == 862545276


def test_uuid_ids_are_stable_and_in_int32_range():
    event_id = '3f1c9a52-7b7e-4c55-9d0e-2f6a1e4b8c10'
    first = derive_notification_id(event_id)
    assert first == derive_notification_id(event_id)
    assert 0 <= first <= 2 ** 31
    assert first != derive_notification_id(event_id.upper())
