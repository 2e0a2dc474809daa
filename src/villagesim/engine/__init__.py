"""模拟引擎：资源管理、事件管理、村庄锁与协调器。"""
