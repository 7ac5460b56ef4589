from .review_analyzer import OpenRouterReviewAnalyzer, ReviewAnalyzer, ReviewAnalyzerError

__all__ = ["OpenRouterReviewAnalyzer", "ReviewAnalyzer", "ReviewAnalyzerError"]
