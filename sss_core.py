import random
import secrets
import threading
from collections import namedtuple

# Define the prime number for the finite field
# Using 251 as it's the largest prime below 256, so every share value fits in one byte
PRIME = 251


class SecretSharingError(Exception):
    """Base class for all secret sharing failures."""


class InvalidParameters(SecretSharingError, ValueError):
    """Scheme parameters or a secret fall outside what the field supports."""


class InvalidShareSet(SecretSharingError, ValueError):
    """The supplied shares cannot determine the secret."""


class DimensionMismatch(SecretSharingError, ValueError):
    """Grids handed to a grid operation do not share one 2D shape."""


class DivisionByZero(SecretSharingError, ZeroDivisionError):
    """An element with no multiplicative inverse was inverted."""


# A share: x is the share index (1..n), y the polynomial value at x
Point = namedtuple("Point", ["x", "y"])


def mod_add(a, b, prime=PRIME):
    return (a + b) % prime


def mod_sub(a, b, prime=PRIME):
    # Python's % already returns a non-negative result for a positive modulus
    return (a - b) % prime


def mod_mul(a, b, prime=PRIME):
    return (a * b) % prime


def mod_neg(a, prime=PRIME):
    return (prime - a) % prime


def mod_inverse(num, prime=PRIME):
    """
    Calculate the modular multiplicative inverse using Extended Euclidean Algorithm

    Raises:
        DivisionByZero: if num has no inverse modulo prime (num = 0 mod prime)
    """
    # Extended Euclidean Algorithm to find modular multiplicative inverse
    def extended_gcd(a, b):
        if a == 0:
            return (b, 0, 1)
        g, x, y = extended_gcd(b % a, a)
        return (g, y - (b // a) * x, x)

    num %= prime
    if num == 0:
        raise DivisionByZero(f"0 has no inverse mod {prime}")

    gcd, x, _ = extended_gcd(num, prime)
    if gcd != 1:
        raise DivisionByZero(f"Modular inverse does not exist for {num} mod {prime}")
    return x % prime


def evaluate_polynomial(coefficients, x, prime=PRIME):
    """
    Evaluate a polynomial with given coefficients at point x in a finite field with given prime.

    Coefficients are ordered lowest degree first, so coefficients[0] is P(0).
    """
    result = 0
    for coefficient in reversed(coefficients):
        result = (result * x + coefficient) % prime
    return result


def is_prime(value):
    """Trial division primality check; moduli here are tiny."""
    if value < 2:
        return False
    divisor = 2
    while divisor * divisor <= value:
        if value % divisor == 0:
            return False
        divisor += 1
    return True


class SecureFieldSource:
    """Draws uniform field elements from the operating system's CSPRNG."""

    def __init__(self, prime=PRIME):
        self.prime = prime

    def next_field_element(self):
        return secrets.randbelow(self.prime)


class SeededFieldSource:
    """
    Reproducible field elements for tests and demos.

    NOT suitable for real shares: anyone who knows the seed can rebuild every
    polynomial. Draws are serialized so one instance can feed several workers.
    """

    def __init__(self, seed=None, prime=PRIME):
        self.prime = prime
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def next_field_element(self):
        with self._lock:
            return self._rng.randrange(self.prime)


class ThresholdScheme:
    """
    (k, n) Shamir threshold scheme over GF(prime).

    Any k of the n shares produced by generate_shares reconstruct the secret;
    fewer reveal nothing about it. Instances are immutable once built and can
    be shared between threads.
    """

    __slots__ = ("_k", "_n", "_prime", "_source")

    def __init__(self, k, n, prime=PRIME, source=None):
        """
        Args:
            k: Minimum number of shares needed for reconstruction
            n: Total number of shares to generate
            prime: Prime modulus for finite field arithmetic
            source: Object with next_field_element() supplying polynomial
                coefficients; defaults to a SecureFieldSource

        Raises:
            InvalidParameters: unless 1 <= k <= n < prime and prime is prime
        """
        if not is_prime(prime):
            raise InvalidParameters(f"Modulus must be prime, got {prime}")
        if k < 1:
            raise InvalidParameters(f"Threshold k must be >= 1, got {k}")
        if k > n:
            raise InvalidParameters(f"Threshold cannot be greater than the number of shares (k={k}, n={n})")
        if n >= prime:
            raise InvalidParameters(f"Number of shares must be below the modulus (n={n}, prime={prime})")

        self._k = k
        self._n = n
        self._prime = prime
        self._source = source if source is not None else SecureFieldSource(prime)

    @property
    def k(self):
        return self._k

    @property
    def n(self):
        return self._n

    @property
    def prime(self):
        return self._prime

    @property
    def source(self):
        return self._source

    def __repr__(self):
        return f"ThresholdScheme(k={self._k}, n={self._n}, prime={self._prime})"

    def generate_shares(self, secret):
        """
        Split a secret into n shares.

        Args:
            secret: Field element in [0, prime), e.g. one grayscale sample

        Returns:
            List of n Points with x = 1..n in ascending order
        """
        if int(secret) != secret:
            raise InvalidParameters(f"Secret must be an integer, got {secret!r}")
        secret = int(secret)
        if not 0 <= secret < self._prime:
            raise InvalidParameters(f"Secret must be in range [0, {self._prime - 1}], got {secret}")

        # Random polynomial of degree k-1 whose constant term is the secret
        coefficients = [secret]
        for _ in range(self._k - 1):
            coefficients.append(self._source.next_field_element())

        # x = 0 would hand out the secret itself, so shares start at 1
        return [Point(x, evaluate_polynomial(coefficients, x, self._prime)) for x in range(1, self._n + 1)]

    def lagrange_coefficients(self, xs):
        """
        Lagrange basis values L_i(0) for the share indices xs.

        Raises:
            InvalidShareSet: fewer than k indices, or an index outside [1, n]
            DivisionByZero: two indices are equal
        """
        xs = [int(x) for x in xs]
        if len(xs) < self._k:
            raise InvalidShareSet(f"Need at least {self._k} shares, got {len(xs)}")
        for x in xs:
            if not 1 <= x <= self._n:
                raise InvalidShareSet(f"Share index {x} outside [1, {self._n}]")
        if len(set(xs)) != len(xs):
            raise DivisionByZero(f"Share indices must be distinct, got {sorted(xs)}")

        p = self._prime
        basis = []
        for i, x_i in enumerate(xs):
            numerator = 1
            denominator = 1
            for j, x_j in enumerate(xs):
                if i != j:
                    numerator = mod_mul(numerator, mod_neg(x_j, p), p)
                    denominator = mod_mul(denominator, mod_sub(x_i, x_j, p), p)
            basis.append(mod_mul(numerator, mod_inverse(denominator, p), p))
        return basis

    def reconstruct_secret(self, points):
        """
        Reconstruct the secret from k or more shares using Lagrange interpolation at x=0.

        Args:
            points: Iterable of (x, y) pairs with distinct x

        Returns:
            The secret, in [0, prime)
        """
        points = [Point(int(x), int(y)) for x, y in points]
        basis = self.lagrange_coefficients([pt.x for pt in points])

        secret = 0
        for pt, weight in zip(points, basis):
            secret = mod_add(secret, mod_mul(pt.y, weight, self._prime), self._prime)
        return secret


def split_secret(secret, threshold, num_shares, prime=PRIME, source=None):
    """
    Split a secret into n shares using Shamir's Secret Sharing.

    Args:
        secret: The secret to share (0-250 for pixel values)
        threshold: Minimum number of shares required to reconstruct the secret
        num_shares: Total number of shares to generate
        prime: Prime number for the finite field
        source: Optional coefficient source (see SeededFieldSource)

    Returns:
        List of Points (x_i, y_i)
    """
    return ThresholdScheme(threshold, num_shares, prime, source).generate_shares(secret)


def lagrange_interpolation(shares, prime=PRIME):
    """
    Interpolate the polynomial through the shares and evaluate it at x=0.

    No threshold is known here, so too few shares silently give a wrong
    answer. Use ThresholdScheme.reconstruct_secret when k is known.
    """
    if not shares:
        raise InvalidShareSet("No shares provided")

    xs = [int(x) for x, _ in shares]
    if len(set(xs)) != len(xs):
        raise DivisionByZero(f"Share indices must be distinct, got {sorted(xs)}")

    secret = 0
    for i, (x_i, y_i) in enumerate(shares):
        numerator = 1
        denominator = 1
        for j, x_j in enumerate(xs):
            if i != j:
                numerator = (numerator * (0 - x_j)) % prime
                denominator = (denominator * (x_i - x_j)) % prime

        # Lagrange basis polynomial evaluated at x=0
        lagrange_basis = (numerator * mod_inverse(denominator, prime)) % prime
        secret = (secret + y_i * lagrange_basis) % prime

    return secret


def recover_secret(shares, threshold=None, prime=PRIME):
    """
    Recover the secret from at least threshold shares.

    Without a threshold every share is used as-is (see lagrange_interpolation).
    """
    if threshold is None:
        return lagrange_interpolation(shares, prime)
    num_shares = max(int(x) for x, _ in shares) if shares else threshold
    scheme = ThresholdScheme(threshold, max(num_shares, threshold), prime)
    return scheme.reconstruct_secret(shares)


if __name__ == "__main__":
    # Two of three shares of one pixel value
    scheme = ThresholdScheme(2, 3)
    shares = scheme.generate_shares(200)
    print("Secret: 200")
    print(f"Generated {len(shares)} shares: {shares}")
    print(f"Recovered from x=1,2: {scheme.reconstruct_secret(shares[:2])}")
    print(f"Recovered from x=2,3: {scheme.reconstruct_secret(shares[1:])}")
