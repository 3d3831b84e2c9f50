"""
Configuration subsystem.

- ``config.Config``: static settings from environment variables (.env support)
- ``manager.ConfigManager``: dot-notation access to YAML gameplay configuration

``ConfigManager`` depends on the logging subsystem, which itself reads
``Config``; import it from ``sparkle.core.config.manager`` directly.

Usage
-----
```python
from sparkle.core.config import Config
from sparkle.core.config.manager import ConfigManager

url = Config.DATABASE_URL
ttl = ConfigManager.get("leaderboard.cache_ttl_seconds", 300)
```
"""

from sparkle.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
