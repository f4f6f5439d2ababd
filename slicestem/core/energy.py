"""Relativistic electron wavelength and interaction parameter."""

from __future__ import annotations

from typing import Optional

import numpy as np
from ase import units


def energy2mass(energy: float) -> float:
    """
    Relativistic electron mass [kg] at an acceleration energy [eV].
    """
    return (1 + units._e * energy / (units._me * units._c**2)) * units._me


def energy2wavelength(energy: float) -> float:
    """
    Relativistic de Broglie wavelength.

    Parameters
    ----------
    energy : float
        Acceleration energy [eV].

    Returns
    -------
    float
        Wavelength [Å].
    """
    rest_energy = units._me * units._c**2 / units._e
    momentum = np.sqrt(energy * (2 * rest_energy + energy)) * units._e / units._c
    return units._hplanck / momentum * 1.0e10


def energy2sigma(energy: float) -> float:
    """
    Interaction parameter sigma = 2 pi m e lambda / h^2 relating the projected
    potential to the phase shift of the electron wave.

    Parameters
    ----------
    energy : float
        Acceleration energy [eV].

    Returns
    -------
    float
        Interaction parameter [1 / (Å * eV)].
    """
    mass = energy2mass(energy) * units.kg
    charge = units._e * units.C
    planck = units._hplanck * units.s * units.J
    return 2 * np.pi * mass * charge * energy2wavelength(energy) / planck**2


class EnergyUndefinedError(Exception):
    pass


class Accelerator:
    """
    The acceleration energy of the probe electrons and the quantities derived from it.

    Parameters
    ----------
    energy : float, optional
        Acceleration energy [eV].
    """

    def __init__(self, energy: Optional[float] = None):
        if energy is not None:
            energy = float(energy)
            if energy <= 0.0:
                raise ValueError(f"energy must be positive, got {energy}")

        self._energy = energy

    @property
    def energy(self) -> float | None:
        """Acceleration energy [eV]."""
        return self._energy

    @property
    def wavelength(self) -> float:
        """Relativistic wavelength [Å]."""
        self.check_is_defined()
        return energy2wavelength(self._energy)

    @property
    def sigma(self) -> float:
        """Interaction parameter [1 / (Å * eV)]."""
        self.check_is_defined()
        return energy2sigma(self._energy)

    def check_is_defined(self):
        if self._energy is None:
            raise EnergyUndefinedError("energy is not defined")
