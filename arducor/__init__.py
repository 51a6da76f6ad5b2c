# ArduCor light controller
# Routine engine, light protocol and device multiplexing for addressable RGB LEDs

__version__ = '0.1.0'
