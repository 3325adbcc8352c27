"""Reference worker processes honoring the job descriptor contract."""
