from helpshelf.models.onboarding_progress import OnboardingProgress

__all__ = [
    "OnboardingProgress",
]
