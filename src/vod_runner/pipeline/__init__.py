"""Task scheduling pipeline: configuration, dispatch and file relocation."""
