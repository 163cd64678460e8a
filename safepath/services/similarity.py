from typing import Dict, Iterable, List, Optional, Tuple
from ..config import Settings, get_settings
from ..models.domain import SimilarityScore, UserDemographics


class SimilarityCalculator:
    # Weight factors for each shared demographic attribute
    WEIGHTS = {
        'race_ethnicity': 0.25,
        'gender': 0.20,
        'lgbtq_status': 0.20,
        'disability_status': 0.15,
        'religion': 0.15,
        'age_range': 0.05,
    }

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def compare(self, user: UserDemographics, other: UserDemographics) -> Tuple[float, List[str]]:
        """Weighted demographic overlap between two users, in [0, 1]"""
        score = 0.0
        shared: List[str] = []

        if user.race_ethnicity and other.race_ethnicity:
            intersection = [r for r in user.race_ethnicity if r in other.race_ethnicity]
            if intersection:
                overlap = len(intersection) / max(len(user.race_ethnicity), len(other.race_ethnicity))
                score += self.WEIGHTS['race_ethnicity'] * overlap
                shared.append(f"race_ethnicity: {', '.join(intersection)}")

        if user.gender and other.gender and user.gender == other.gender:
            score += self.WEIGHTS['gender']
            shared.append(f"gender: {user.gender}")

        if user.lgbtq_status is not None and other.lgbtq_status is not None \
                and user.lgbtq_status == other.lgbtq_status:
            score += self.WEIGHTS['lgbtq_status']
            if user.lgbtq_status:
                shared.append("lgbtq_status: yes")

        if user.disability_status and other.disability_status:
            intersection = [d for d in user.disability_status if d in other.disability_status]
            if intersection:
                score += self.WEIGHTS['disability_status']
                shared.append(f"disability: {', '.join(intersection)}")

        if user.religion and other.religion and user.religion == other.religion:
            score += self.WEIGHTS['religion']
            shared.append(f"religion: {user.religion}")

        if user.age_range and other.age_range and user.age_range == other.age_range:
            score += self.WEIGHTS['age_range']
            shared.append(f"age: {user.age_range}")

        return min(1.0, score), shared

    def rank(
        self,
        user: UserDemographics,
        others: Dict[str, UserDemographics],
        limit: Optional[int] = None,
    ) -> List[SimilarityScore]:
        """Other users ordered by similarity, most similar first"""
        scores = []
        for other_id, demographics in others.items():
            value, shared = self.compare(user, demographics)
            scores.append(SimilarityScore(
                other_user_id=other_id,
                similarity_score=round(value, 4),
                shared_attributes=tuple(shared),
            ))

        scores.sort(key=lambda s: (-s.similarity_score, s.other_user_id))
        return scores[: limit or self.settings.max_similar_users]

    def similar_user_ids(self, user: UserDemographics, others: Dict[str, UserDemographics]) -> Iterable[str]:
        threshold = self.settings.min_similarity_score
        return [
            s.other_user_id
            for s in self.rank(user, others, limit=len(others) or None)
            if s.similarity_score >= threshold
        ]
