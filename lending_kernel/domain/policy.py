"""
LendingPolicy -- tunable lending rules consumed by the coordinator.

The kernel owns the type so that it never imports the configuration
package; ``lending_config`` builds instances from YAML.
"""

from dataclasses import dataclass

from lending_kernel.domain.codes import DEFAULT_SEGMENT_WIDTH, DEFAULT_SERIAL_WIDTH


@dataclass(frozen=True)
class LendingPolicy:
    """
    Guarantees:
        - default_loan_days >= 1
        - max_code_attempts >= 1
    """

    default_loan_days: int = 15
    strict_condition_catalog: bool = True
    max_code_attempts: int = 5
    code_segment_width: int = DEFAULT_SEGMENT_WIDTH
    serial_width: int = DEFAULT_SERIAL_WIDTH

    def __post_init__(self) -> None:
        if self.default_loan_days < 1:
            raise ValueError(
                f"default_loan_days must be >= 1, got {self.default_loan_days}"
            )
        if self.max_code_attempts < 1:
            raise ValueError(
                f"max_code_attempts must be >= 1, got {self.max_code_attempts}"
            )
        if self.code_segment_width < 1 or self.serial_width < 1:
            raise ValueError("code widths must be >= 1")


DEFAULT_POLICY = LendingPolicy()
