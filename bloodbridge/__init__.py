"""Django project package for the BloodBridge backend."""
