"""Periodic process-table sampler that emits one structured record per process."""
