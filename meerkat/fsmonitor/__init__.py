# meerkat/fsmonitor/__init__.py

"""
Recursive directory monitoring with deduplicated watches
"""
from .events import EventType, FsEvent
from .watchset import WatchSet, ObserverRegistrar
from .walker import DirectoryWalker, PendingWalkQueue
from .patterns import FilenameFilter, StartTimeGate, RateLimitGate, new_file_filter_chain
from .classifier import EventClassifier
from .monitor import DirectoryMonitor, MonitorSetupError

__all__ = [
    'EventType',
    'FsEvent',
    'WatchSet',
    'ObserverRegistrar',
    'DirectoryWalker',
    'PendingWalkQueue',
    'FilenameFilter',
    'StartTimeGate',
    'RateLimitGate',
    'new_file_filter_chain',
    'EventClassifier',
    'DirectoryMonitor',
    'MonitorSetupError',
]
