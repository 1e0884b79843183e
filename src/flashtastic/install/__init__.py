"""
Flashtastic Install Subsystem

Blocking installers that write a downloaded firmware file to a device:
- dfu: USB DFU (DfuSe) transfer
- mass_storage: UF2 copy onto the bootloader volume
"""

from .dfu import install_dfu
from .mass_storage import install_mass_storage

__all__ = ["install_dfu", "install_mass_storage"]
