"""Pipeline core: trigger detection, concurrency guard and orchestration."""
