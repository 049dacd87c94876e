from estateops.retention.reaper import RetentionReaper

__all__ = ["RetentionReaper"]
