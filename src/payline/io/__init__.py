"""Raw-row profiling and file loading."""
