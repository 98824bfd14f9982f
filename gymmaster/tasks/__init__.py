from gymmaster.tasks.scheduler import build_scheduler, start_scheduler, stop_scheduler

__all__ = ["build_scheduler", "start_scheduler", "stop_scheduler"]
