from ffwatch.domain.models import Sample


class StallDetector:
    """Counts consecutive samples that did not move the frame counter.

    A stall usually means an unreliable (e.g. http) source; retrying would
    hit the same wall, so the caller treats it as fatal. The duplicate-frame
    ceiling is checked independently: a climbing dup count means the encoder
    keeps re-emitting a frozen input.
    """

    def __init__(self, max_stall: int = 0, max_dup: int = 0):
        self.max_stall = max_stall
        self.max_dup = max_dup
        self.count = 0
        self.prior = Sample()

    def observe(self, sample: Sample) -> int:
        if sample.frame <= self.prior.frame and sample.frame != 0:
            self.count += 1
        else:
            self.count = 0
        self.prior = sample
        return self.count

    @property
    def stalled(self) -> bool:
        return self.max_stall > 0 and self.count > self.max_stall

    def frozen(self, sample: Sample) -> bool:
        return self.max_dup > 0 and sample.dup >= self.max_dup
