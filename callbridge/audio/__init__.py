"""Audio clients and DSP helpers for the call pipeline."""
