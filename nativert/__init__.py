"""OS-backed runtime for file, directory and TCP I/O served by worker threads."""

__version__ = "0.1.0"

__all__ = ["core", "sockets", "thread_io", "thread_backend", "directory", "runtime"]