"""Pool core: accumulators, privilege gating and orchestration."""
