"""Engine core: clock, configuration, auction components and storage."""
