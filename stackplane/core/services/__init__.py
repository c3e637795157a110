"""Pipeline services — directories, validation, addressing, normalization, planning."""
