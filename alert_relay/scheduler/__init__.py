"""
scheduler — The long-running poll loop and its maintenance hook.

Modules:
    loop         — SchedulerLoop: cycle, sleep, repeat; contains failures
    maintenance  — ledger retention cleanup and VACUUM
"""
