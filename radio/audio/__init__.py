"""Radio Program Pipeline - Audio graph and engine boundary."""
