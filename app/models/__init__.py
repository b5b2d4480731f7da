from app.models.job import FORMAT_ALIASES, Job, JobStatus, OutputFormat, VideoMetadata

__all__ = ["FORMAT_ALIASES", "Job", "JobStatus", "OutputFormat", "VideoMetadata"]
