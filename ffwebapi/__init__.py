"""HTTP service that queues ffmpeg jobs, runs them with bounded concurrency and serves their output files."""

__version__ = "0.1.0"