from shared.runtime.session_cache import SessionCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_put_and_get_are_case_insensitive():
    cache = SessionCache()
    cache.put("SomeChannel", video_id="v1", emote_map={":a:": "u"})

    entry = cache.get("somechannel")
    assert entry.video_id == "v1"
    assert entry.emote_map == {":a:": "u"}
    assert len(cache) == 1


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = SessionCache(60, clock=clock)
    cache.put("chan", video_id="v1")

    clock.now += 59
    assert cache.get("chan") is not None
    clock.now += 2
    assert cache.get("chan") is None
    assert len(cache) == 0


def test_invalidate_and_clear():
    cache = SessionCache()
    cache.put("a", video_id="1")
    cache.put("b", video_id="2")

    assert cache.invalidate("a")
    assert not cache.invalidate("a")
    cache.clear()
    assert cache.get("b") is None
