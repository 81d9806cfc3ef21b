"""IntelliCourse video curator: safe, embeddable YouTube videos for course modules."""

__version__ = "1.0.0"
