"""NVIDIA Driver Installer - Main package

Installs the proprietary NVIDIA driver on Clear Linux OS from a run-file,
redistributable archive or Vulkan beta package, builds its kernel module
with DKMS and configures the desktop stack for it.
"""

__version__ = "1.0.0"
