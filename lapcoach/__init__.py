"""Track segmentation and real-time reference-lap comparison for sim-racing telemetry."""
