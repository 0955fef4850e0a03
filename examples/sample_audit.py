"""Sample audit script demonstrating programmatic usage."""
from stylus_sentinel import analyze, build_model
from stylus_sentinel.config import AnalysisConfig
from stylus_sentinel.detectors import Severity

COUNTER = b"""
sol_storage! {
    #[entrypoint]
    pub struct Counter {
        uint256 number;
        address owner;
    }
}

#[public]
impl Counter {
    /// Returns the current count.
    pub fn number(&self) -> U256 {
        self.number.get()
    }

    pub fn increment(&mut self) {
        let number = self.number.get();
        self.number.set(number + U256::from(1));
    }
}
"""


def demo_with_stylus_counter():
    """Analyze a small Stylus counter and print the findings at or above Low."""
    model = build_model(COUNTER)
    print(f"Parsed {model.name}: {len(model.functions)} functions, {len(model.storage)} storage slots")

    report = analyze(model, AnalysisConfig(severity_floor=Severity.LOW))
    for estimate in report.cost_summary.estimates:
        print(f"  {estimate.function}: ~{estimate.gas} gas")
    print(report.to_markdown())


if __name__ == "__main__":
    demo_with_stylus_counter()
