from .basestrap import build_package_list, run_basestrap
from .desktop import install_desktop
from .fstab import generate_fstab, write_fstab
from .mkinitcpio import configure_mkinitcpio, generate_mkinitcpio_conf, install_custom_hooks, regenerate_initramfs, uses_custom_hooks
from .secureboot import setup_secureboot
from .swap import configure_swap
from .system import configure_system, install_bootloader

__all__ = [
	'build_package_list',
	'configure_mkinitcpio',
	'configure_swap',
	'configure_system',
	'generate_fstab',
	'generate_mkinitcpio_conf',
	'install_bootloader',
	'install_custom_hooks',
	'install_desktop',
	'regenerate_initramfs',
	'run_basestrap',
	'setup_secureboot',
	'uses_custom_hooks',
	'write_fstab',
]
