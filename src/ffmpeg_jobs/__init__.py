"""
ffmpeg-jobs (ffj) - Supervised FFmpeg/FFprobe jobs

Runs FFmpeg transcodes as supervised background jobs:
- Typed job description compiled into validated CLI arguments
- One supervisor thread per job, progress parsed from `-progress pipe:1`
- Progress listeners dispatched on the asyncio loop
- A single completion future with classified failures
- Cooperative cancellation and timeouts
- Blocking and async FFprobe metadata queries
"""

__version__ = "0.1.0"
__package_name__ = "ffmpeg-jobs"
__short_name__ = "ffj"
