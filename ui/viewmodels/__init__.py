"""ViewModels package for Duo Desk UI."""

from ui.viewmodels.main_viewmodel import MainViewModel

__all__ = [
    "MainViewModel",
]
