"""
Routine module for LED color synthesis.

This module provides the per device routine engine and the palettes it draws from.
"""

from .engine import Routine, RoutineEngine, SettingResult
from .palettes import Color, ColorGroup, Palette, PaletteResolver

__all__ = ['Color', 'ColorGroup', 'Palette', 'PaletteResolver', 'Routine', 'RoutineEngine', 'SettingResult']
