"""
Tests for the watch set tracker
"""
import threading

import pytest

from meerkat.fsmonitor.watchset import WatchSet
from tests.conftest import FakeRegistrar


class TestWatchSet:

    def test_first_add_registers(self, registrar, tmp_path):
        watch_set = WatchSet(registrar)

        assert watch_set.try_add(str(tmp_path)) == (False, None)
        assert watch_set.try_add(str(tmp_path)) == (True, None)
        assert registrar.added == [str(tmp_path)]
        assert str(tmp_path) in watch_set
        assert len(watch_set) == 1

    def test_concurrent_adds_register_once(self, tmp_path):
        registrar = FakeRegistrar(delay=0.05)
        watch_set = WatchSet(registrar)
        barrier = threading.Barrier(16)
        results = []

        def add():
            barrier.wait()
            results.append(watch_set.try_add(str(tmp_path)))

        threads = [threading.Thread(target=add) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert registrar.added == [str(tmp_path)]
        assert results.count((False, None)) == 1
        assert results.count((True, None)) == 15

    def test_failed_registration_is_not_tracked(self, registrar, tmp_path):
        watch_set = WatchSet(registrar)
        missing = tmp_path / "missing"

        exists, err = watch_set.try_add(str(missing))
        assert exists is False
        assert isinstance(err, FileNotFoundError)
        assert str(missing) not in watch_set

        missing.mkdir()
        assert watch_set.try_add(str(missing)) == (False, None)
        assert str(missing) in watch_set

    def test_without_dedupe_always_registers(self, registrar, tmp_path):
        watch_set = WatchSet(registrar, dedupe=False)

        assert watch_set.try_add(str(tmp_path)) == (False, None)
        assert watch_set.try_add(str(tmp_path)) == (False, None)
        assert registrar.added == [str(tmp_path), str(tmp_path)]

    def test_without_dedupe_concurrent_stats_are_exact(self, tmp_path):
        watch_set = WatchSet(FakeRegistrar(), dedupe=False)
        barrier = threading.Barrier(8)

        def add():
            barrier.wait()
            for _ in range(200):
                watch_set.try_add(str(tmp_path))

        threads = [threading.Thread(target=add) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert watch_set.stats['registered'] == 1600

    def test_discard_twice_is_noop(self, registrar, tmp_path):
        watch_set = WatchSet(registrar)
        watch_set.try_add(str(tmp_path))

        assert watch_set.discard(str(tmp_path)) is True
        assert watch_set.discard(str(tmp_path)) is False
        assert registrar.removed == [str(tmp_path)]
        assert len(watch_set) == 0

    def test_discard_tolerates_registrar_errors(self, tmp_path):
        class BrokenRemove(FakeRegistrar):
            def remove(self, path):
                raise OSError("can't remove non-existent inotify watch")

        watch_set = WatchSet(BrokenRemove())
        watch_set.try_add(str(tmp_path))

        assert watch_set.discard(str(tmp_path)) is True
        assert str(tmp_path) not in watch_set
