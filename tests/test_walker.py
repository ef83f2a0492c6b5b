"""
Tests for the one-level directory walker
"""
import asyncio

import pytest

from meerkat.fsmonitor.walker import DirectoryWalker, PendingWalkQueue
from meerkat.fsmonitor.watchset import WatchSet


async def walk_tree(root, registrar):
    watch_set = WatchSet(registrar)
    queue = PendingWalkQueue()
    walker = DirectoryWalker(watch_set, queue)
    task = asyncio.create_task(walker.run())

    assert watch_set.try_add(str(root)) == (False, None)
    await queue.put(str(root))
    await asyncio.wait_for(queue.join(), timeout=10)

    queue.close()
    await asyncio.wait_for(task, timeout=5)
    return watch_set, walker


class TestDirectoryWalker:

    @pytest.mark.asyncio
    async def test_full_tree_coverage(self, tree, registrar):
        watch_set, walker = await walk_tree(tree, registrar)

        assert len(watch_set) == 15
        assert len(registrar.added) == 15
        assert str(tree / "b" / "d" / "f") in watch_set
        assert walker.stats['walked'] == 15

    def test_walk_one_level_only_registers_children(self, tree, registrar):
        watch_set = WatchSet(registrar)
        walker = DirectoryWalker(watch_set, queue=None)

        new_dirs = walker.walk_one_level(str(tree))

        assert sorted(new_dirs) == [str(tree / "a"), str(tree / "b")]
        assert len(watch_set) == 2

    def test_already_tracked_children_are_not_walked_again(self, tree, registrar):
        watch_set = WatchSet(registrar)
        watch_set.try_add(str(tree / "a"))
        walker = DirectoryWalker(watch_set, queue=None)

        assert walker.walk_one_level(str(tree)) == [str(tree / "b")]

    def test_files_are_skipped(self, tmp_path, registrar):
        (tmp_path / "photo.jpg").write_bytes(b"x")
        (tmp_path / "sub").mkdir()
        walker = DirectoryWalker(WatchSet(registrar), queue=None)

        assert walker.walk_one_level(str(tmp_path)) == [str(tmp_path / "sub")]

    def test_vanished_directory_is_logged_not_raised(self, tmp_path, registrar):
        walker = DirectoryWalker(WatchSet(registrar), queue=None)

        assert walker.walk_one_level(str(tmp_path / "gone")) == []
        assert walker.stats['errors'] == 1

    @pytest.mark.asyncio
    async def test_walker_exits_when_queue_closed(self, registrar):
        queue = PendingWalkQueue()
        walker = DirectoryWalker(WatchSet(registrar), queue)
        task = asyncio.create_task(walker.run())

        await asyncio.sleep(0)
        queue.close()

        await asyncio.wait_for(task, timeout=1)

    @pytest.mark.asyncio
    async def test_close_drops_pending_paths(self, tmp_path):
        queue = PendingWalkQueue(maxsize=5)
        await queue.put(str(tmp_path))
        await queue.put(str(tmp_path))

        queue.close()
        await queue.put(str(tmp_path))

        assert await queue.get() is None


class TestRescan:

    def test_finds_directories_below_tracked_ones(self, tree, registrar):
        watch_set = WatchSet(registrar)
        for path in (tree, tree / "a", tree / "b"):
            watch_set.try_add(str(path))
        walker = DirectoryWalker(watch_set, queue=None)

        assert walker.rescan(str(tree)) == 12
        assert len(watch_set) == 15
        assert str(tree / "b" / "d" / "f") in watch_set

    def test_complete_tree_adds_nothing(self, tree, registrar):
        watch_set = WatchSet(registrar)
        walker = DirectoryWalker(watch_set, queue=None)
        walker.rescan(str(tree))

        assert walker.rescan(str(tree)) == 0
        assert len(registrar.added) == 14

    def test_stops_when_asked(self, tree, registrar):
        walker = DirectoryWalker(WatchSet(registrar), queue=None)

        assert walker.rescan(str(tree), should_stop=lambda: True) == 0
        assert registrar.added == []
